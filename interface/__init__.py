"""dbshift HTTP interface"""
