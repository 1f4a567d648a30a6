#!/usr/bin/env python3

import argparse
import asyncio
import contextlib
import logging

import config
from channel import WebSocketChannel
from session import LatencySession, SessionSettings


def positive_int(value):
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {value}")
    return number


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Measure latency, jitter and packet loss against an echo server.")
    parser.add_argument("url", nargs="?", default=config.SERVER_URL, help=f"Echo server URL (default: {config.SERVER_URL})")
    parser.add_argument(
        "--interval", type=positive_int, default=config.DEFAULT_PING_INTERVAL_MS,
        help=f"Ping interval in ms; presets {', '.join(map(str, config.PING_INTERVAL_PRESETS_MS))} (default: {config.DEFAULT_PING_INTERVAL_MS})",
    )
    parser.add_argument("--duration", type=float, default=None, help="Stop after this many seconds (default: run until Ctrl+C)")
    parser.add_argument(
        "--report-interval", type=float, default=config.REPORT_INTERVAL_S,
        help=f"Seconds between metric reports (default: {config.REPORT_INTERVAL_S})",
    )
    return parser.parse_args(argv)


async def report_periodically(session, interval_s):
    while True:
        await asyncio.sleep(interval_s)
        logging.info(f"[{session.state.value}] {session.metrics().summary()}")


async def run(url, settings, duration_s=None, report_interval_s=config.REPORT_INTERVAL_S):
    """Runs one measurement against url and returns the final Metrics."""
    channel = WebSocketChannel(url)
    session = LatencySession(channel, settings)
    channel.subscribe(session)

    channel_task = asyncio.create_task(channel.run())
    report_task = asyncio.create_task(report_periodically(session, report_interval_s))
    try:
        if duration_s is None:
            await channel_task
        else:
            await asyncio.wait({channel_task}, timeout=duration_s)
    finally:
        report_task.cancel()
        await channel.close()
        channel_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await channel_task
        with contextlib.suppress(asyncio.CancelledError):
            await report_task

    metrics = session.metrics()
    logging.info(f"Final result: {metrics.summary()}")
    return metrics


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT)
    settings = SessionSettings(ping_interval_ms=args.interval)
    try:
        asyncio.run(run(args.url, settings, args.duration, args.report_interval))
    except KeyboardInterrupt:
        logging.info("Client stopped by user.")


if __name__ == "__main__":
    main()
