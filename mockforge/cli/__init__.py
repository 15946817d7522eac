"""
Mockforge CLI
"""
