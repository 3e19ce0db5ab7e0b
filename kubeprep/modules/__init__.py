"""
Host provisioning modules.
"""
