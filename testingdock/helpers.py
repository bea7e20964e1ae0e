"""Small utilities for writing tests against containers"""

import socket


def random_port(host: str = "localhost") -> int:
    """
    Return a TCP port that is free at the time of the call

    Useful for host port bindings of containers started in parallel.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]
