"""Database adapters"""
