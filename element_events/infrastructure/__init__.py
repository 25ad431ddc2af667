"""
Infrastructure layer: configuration, logging and transports.
"""
