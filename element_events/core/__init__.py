"""
Core layer: domain models, interfaces, services and the error taxonomy.
"""
