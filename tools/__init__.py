"""dbshift command-line tools"""
