# main.py
"""
Entry Point — TB Detect (chest X-ray screening)

Purpose
-------
Classify one chest X-ray from the command line:
  1) Load detector settings (--config JSON, ./tbdetect.json, or TBDETECT_* env).
  2) Apply CLI overrides (--backends / --model / --endpoint / --normalization / --demo).
  3) Run the Detection Orchestrator and print the result.

Exit codes
----------
  0  a result was produced (including the degraded conservative fallback)
  2  bad input (unreadable/oversized image) or invalid configuration

Usage
-----
    python main.py xray.png --model models/tb_model1.onnx
    python main.py xray.jpg --config tbdetect.json --json
    python main.py xray.jpg --backends local,vision_llm --model https://host/tb.onnx --trace
    python main.py xray.jpg --backends heuristic --demo
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from tbdetect.core.errors import INPUT_ERRORS, ConfigurationError
from tbdetect.core.logs import configure_logging, debug_enabled
from tbdetect.inputs.settings import SettingsLoader, descriptor
from tbdetect.orchestrators import build_orchestrator
from tbdetect.schemas.models import BackendDescriptor, BackendKind, DetectorSettings

EXIT_OK = 0
EXIT_BAD_INPUT = 2


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for one detection run."""
    p = argparse.ArgumentParser(description="TB Detect — chest X-ray tuberculosis screening")
    p.add_argument("image", type=str, help="Path to a PNG or JPEG chest X-ray.")
    p.add_argument("--config", type=str, default=None, help="Path to detector settings JSON.")
    p.add_argument(
        "--backends",
        type=str,
        default=None,
        help="Comma-separated fallback chain, e.g. 'local,remote,vision_llm' (overrides config).",
    )
    p.add_argument("--model", type=str, default=None, help="ONNX model path or http(s) URL for the local backend.")
    p.add_argument("--endpoint", type=str, default=None, help="Remote inference endpoint for the remote backend.")
    p.add_argument(
        "--min-model-bytes",
        type=int,
        default=None,
        help="Reject local model files smaller than this (default 1000000).",
    )
    p.add_argument(
        "--normalization",
        type=str,
        default=None,
        choices=["imagenet", "unit"],
        help="Pixel normalization the model was exported with (overrides config).",
    )
    p.add_argument("--timeout", type=float, default=None, help="Default per-backend timeout in seconds.")
    p.add_argument("--demo", action="store_true", help="Allow the heuristic (non-medical) backend.")
    p.add_argument("--json", action="store_true", help="Print the result as JSON.")
    p.add_argument("--trace", action="store_true", help="Also print the per-backend attempt log.")
    p.add_argument("--verbose", "-v", action="store_true", help="DEBUG logging.")
    p.add_argument("--log-file", type=str, default=None, help="Also log to a rotating file.")
    return p.parse_args(argv)


def _cli_descriptor(kind: str, args: argparse.Namespace) -> BackendDescriptor:
    k = kind.strip().lower()
    if k == BackendKind.local.value:
        options = {} if args.min_model_bytes is None else {"min_model_bytes": args.min_model_bytes}
        if args.model and args.model.lower().startswith(("http://", "https://")):
            return descriptor(k, model_url=args.model, **options)
        return descriptor(k, model_path=args.model, **options)
    if k == BackendKind.remote.value:
        return descriptor(k, endpoint=args.endpoint)
    return descriptor(k)


def build_settings(args: argparse.Namespace) -> DetectorSettings:
    """Resolve settings from file/env, then layer CLI flags on top."""
    if args.backends:
        chain = [_cli_descriptor(k, args) for k in args.backends.split(",") if k.strip()]
    elif args.model and not args.config:
        # a bare --model is the common single-model run
        chain = [_cli_descriptor("local", args)]
    else:
        chain = None

    # a CLI chain replaces only the backends; everything else still comes from file/env
    return SettingsLoader().load_with_overrides(
        args.config,
        backends=None if chain is None else [d.model_dump() for d in chain],
        normalization=args.normalization,
        default_timeout_s=args.timeout,
        demo_mode=True if args.demo else None,
    )


def main(argv: list[str] | None = None) -> int:
    """Run one detection and print the outcome."""
    args = parse_args(argv)
    configure_logging(logging.DEBUG if (args.verbose or debug_enabled()) else logging.INFO, log_file=args.log_file)

    try:
        settings = build_settings(args)
    except (ConfigurationError, FileNotFoundError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_BAD_INPUT

    orchestrator = build_orchestrator(settings)
    try:
        outcome = orchestrator.detect_path_with_trace(args.image)
    except INPUT_ERRORS + (FileNotFoundError,) as e:
        print(f"Input error: {e}", file=sys.stderr)
        return EXIT_BAD_INPUT
    finally:
        orchestrator.close()

    result = outcome.result
    if args.json:
        payload = result.to_payload()
        if args.trace:
            payload["attempts"] = [a.model_dump() for a in outcome.attempts]
        print(json.dumps(payload, indent=2))
    else:
        print(result.summary())
        if args.trace:
            for a in outcome.attempts:
                print(f"  - {a.backend}: {a.outcome}" + (f" ({a.detail})" if a.detail else ""))
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
