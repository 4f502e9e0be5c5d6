"""dbshift configuration"""
