#!/usr/bin/env python3
"""Publish synthetic GPS fixes to the fencewatch topic.

Scatters points around the configured geofence centre. With
``--spread`` larger than the fence radius some fixes land outside the
boundary, which exercises the whole pipeline against a local broker.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

import paho.mqtt.client as mqtt  # noqa: E402

from fencewatch import FenceWatchConfig  # noqa: E402
from fencewatch.ingestion.mqtt import parse_broker_url  # noqa: E402
from fencewatch.simulate import synthetic_fixes  # noqa: E402

_LOG = logging.getLogger("publish_fixes")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Publish synthetic GPS fixes.")
    parser.add_argument("--count", type=int, default=100, help="Number of fixes to publish.")
    parser.add_argument(
        "--spread",
        type=float,
        default=None,
        help="Scatter radius in km (default: 1.5x the geofence radius).",
    )
    parser.add_argument(
        "--vehicle",
        action="append",
        dest="vehicles",
        default=None,
        help="Vehicle id to cycle through; repeat for several (default: one random id).",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logs.")
    return parser.parse_args()


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    config = FenceWatchConfig.from_env()
    broker = parse_broker_url(config.queue_url)
    latitude, longitude = config.geofence_center
    spread = args.spread if args.spread is not None else config.geofence_radius_km * 1.5

    client = mqtt.Client(
        callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        client_id="",
        protocol=mqtt.MQTTv5,
    )
    client.enable_logger(_LOG)
    if broker.username is not None:
        client.username_pw_set(broker.username, broker.password)
    if broker.tls:
        client.tls_set()

    published = 0
    try:
        client.connect(broker.host, broker.port)
        client.loop_start()
        for fix in synthetic_fixes(latitude, longitude, spread, args.count, vehicle_ids=args.vehicles):
            payload: dict[str, Any] = fix.to_message()
            info = client.publish(config.queue_name, json.dumps(payload), qos=1)
            info.wait_for_publish(timeout=10)
            published += 1
            _LOG.debug("Published %s", payload)
    except (OSError, RuntimeError, ValueError) as exc:
        print(f"[publish] failed after {published} fixes: {exc}", file=sys.stderr)
        return 2
    finally:
        try:
            client.disconnect()
        finally:
            client.loop_stop()

    print(f"[publish] {published} fixes sent to {broker.host}:{broker.port} topic={config.queue_name}")
    return 0


if __name__ == "__main__":
    raise SystemExit(_main())
