"""
FileGo - decentralized file storage node.

Peers find each other by flooding peer lists over framed TCP connections,
nodes are tracked in a registry that ranks them for replica placement, and
files are split into content-addressed chunks.
"""

__version__ = "0.1.0"
