"""
Imperative shell: host exchange, notification sinks
"""
