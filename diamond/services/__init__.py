"""
Diamond Client Subscribers

Background services driven by the manager:
1. Address Service - Bootstrap resolution and refresh of the server list
2. Config Service - Poll loop, change detection and watcher fan-out
"""
