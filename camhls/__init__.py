"""
camhls - RTSP to HLS stream supervisor.
"""
