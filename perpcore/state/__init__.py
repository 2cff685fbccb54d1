"""
Record-keeping tables used by the host shell
"""
