"""
Transmission Delivery

Read-and-send and delete-and-send operations with retry policy.
"""
