"""
SBExplorer Service Bus Module.

Value normalization, message location, relocation and the HTTP surface for
dead-letter queues.
"""
