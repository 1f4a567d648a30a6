#!/usr/bin/env python3

import argparse
import asyncio
import ipaddress
import logging
import socket

import netifaces
import websockets

import config
import protocol


# --- Helper Functions ---
def is_reachable_address(ip):
    """True for an IPv4 address other clients could dial (not loopback or link-local)."""
    try:
        address = ipaddress.IPv4Address(ip)
    except ValueError:
        return False
    return not (address.is_loopback or address.is_link_local or address.is_unspecified)


def get_local_ip():
    """Picks the address to advertise in the 'clients should connect to' hint."""
    try:
        candidates = [
            (iface_name, link.get('addr'))
            for iface_name in netifaces.interfaces()
            for link in netifaces.ifaddresses(iface_name).get(netifaces.AF_INET, [])
        ]
    except (OSError, ValueError) as e:
        logging.error(f"Could not enumerate network interfaces: {e}")
        candidates = []

    for iface_name, ip in candidates:
        if is_reachable_address(ip):
            logging.info(f"Advertising {ip} from interface {iface_name}")
            return ip
    logging.warning(f"No reachable IPv4 address among {len(candidates)} candidates. Using 0.0.0.0")
    return "0.0.0.0"


# --- Echo Responder ---
def respond(raw, clock=protocol.now_ms, log_prefix=""):
    """
    Builds the reply to one incoming frame.

    Args:
        raw: Text (or bytes) frame received from the client.
        clock: Returns the current time in epoch milliseconds.
        log_prefix: Logging prefix string.

    Returns:
        The encoded pong frame, or None if the frame gets no reply.
    """
    received_at = clock()
    try:
        message = protocol.decode(raw)
    except protocol.UnknownMessageError as e:
        logging.info(f"{log_prefix} Ignoring message: {e}")
        return None
    except protocol.ProtocolError as e:
        logging.warning(f"{log_prefix} Dropping malformed message: {e}")
        return None

    if not isinstance(message, protocol.Probe):
        logging.info(f"{log_prefix} Unexpected '{protocol.PONG_TYPE}' message from client, ignoring.")
        return None

    logging.debug(f"{log_prefix} Ping received, Seq: {message.sequence_number}, ClientSentAt: {message.client_sent_at}")
    return protocol.encode(protocol.make_echo(message, received_at, clock()))


async def handle_connection(websocket):
    """Echoes every ping on one WebSocket connection until it closes."""
    client_ip, client_port = websocket.remote_address[:2]
    client_log_prefix = f"[{client_ip}:{client_port}]"
    logging.info(f"{client_log_prefix} Client connected.")

    try:
        async for raw in websocket:
            reply = respond(raw, log_prefix=client_log_prefix)
            if reply is not None:
                await websocket.send(reply)
    except websockets.exceptions.ConnectionClosedOK:
        pass
    except websockets.exceptions.ConnectionClosedError as e:
        logging.warning(f"{client_log_prefix} Connection closed abnormally: {e}")
    finally:
        logging.info(f"{client_log_prefix} Client disconnected.")


# --- Main Server Logic ---
async def serve(host, port, stop_signal=None):
    """Runs the echo server until stop_signal resolves (forever by default)."""
    stop_signal = stop_signal or asyncio.get_running_loop().create_future()
    async with websockets.serve(handle_connection, host, port):
        logging.info(f"Echo server running on ws://{host}:{port}")
        await stop_signal


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Ping/pong echo server for latency measurement.")
    parser.add_argument("--host", default=config.SERVER_HOST, help=f"Bind address (default: {config.SERVER_HOST})")
    parser.add_argument("--port", type=int, default=config.SERVER_PORT, help=f"Listen port (default: {config.SERVER_PORT})")
    return parser.parse_args(argv)


async def main(argv=None):
    args = parse_args(argv)

    if args.host == "0.0.0.0":
        display_ip = get_local_ip()
        if display_ip == "0.0.0.0":
            # Attempt fallback using hostname resolution
            try:
                display_ip = socket.gethostbyname(socket.gethostname())
            except socket.gaierror:
                logging.error("Could not resolve hostname to IP either.")
                display_ip = "localhost"
    else:
        display_ip = args.host
    logging.info(f"Clients should connect to ws://{display_ip}:{args.port}")

    try:
        await serve(args.host, args.port)
    except OSError as e:
        if "address already in use" in str(e).lower():
            logging.error(f"Echo server failed to start: Port {args.port} is already in use.")
        else:
            logging.error(f"Echo server failed to start due to OS error: {e}")
    finally:
        logging.info("Server shutdown complete.")


def _cli():
    logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT)
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logging.info("Server stopped by user.")


if __name__ == "__main__":
    _cli()
