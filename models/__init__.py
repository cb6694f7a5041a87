"""Text recognition models"""
