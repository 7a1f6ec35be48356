"""
Project rooms: server-side fan-out (rooms) and the client channel (channel).
"""
