"""
Perpetual-futures exchange accounting core
"""
