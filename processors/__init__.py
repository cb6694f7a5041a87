"""Scan pipeline stages"""
