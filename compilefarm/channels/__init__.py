from .channel import Channel as Channel
from .tcp_channel import TCPChannel as TCPChannel
