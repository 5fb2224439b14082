"""
Services layer for Agent G.
Contains persistence, output export and the outbound HTTP caller used for delegation.
"""
