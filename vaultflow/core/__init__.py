"""Core flow logic"""
