"""dbshift extensions"""
