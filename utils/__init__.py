"""Shared data classes and helpers"""
