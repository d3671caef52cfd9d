# SMB Pulse - Business health interpretation for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Command-line interface for SMB Pulse.

Two subcommands are available.

analyze
    Read period statements from a CSV file (see ``smb_pulse.io``), run the
    full analysis (variances, health signals, trends, anomalies, issues and
    insights) and print it. The analysis bundle can be saved as JSON for
    later questions.

    Examples:

        python -m smb_pulse.cli analyze --statements data/statements.csv
        python -m smb_pulse.cli analyze --statements data/statements.csv \\
            --cash-balance 42000 --cash-as-of 2026-03-31 --output bundle.json
        python -m smb_pulse.cli analyze --statements data/statements.csv --no-llm

ask
    Answer a free-form question from a saved analysis bundle. When the data
    is older than the configured freshness window the answer is prefixed
    with the date of the data.

    Examples:

        python -m smb_pulse.cli ask --bundle bundle.json "Why did my profit drop?"
        python -m smb_pulse.cli ask --bundle bundle.json \\
            --last-synced-at 2026-03-31T08:00:00+00:00 "What is my biggest expense?"

Insights and answers use the Anthropic Messages API. The API key is read
from the environment variable named by ``[llm].api_key_env`` in the
configuration file (``ANTHROPIC_API_KEY`` by default). Without a key,
``analyze`` falls back to template insights and ``ask`` returns a fixed
apology.

End of module description.
"""

import argparse
import logging
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Optional

from . import __version__
from .answers import QueryAnsweringService, with_staleness_notice
from .config import DEFAULT_CONFIG_FILE, DISPLAY_MODES, AppConfig, load_app_config
from .explanations import ExplanationGateway
from .io import read_statements_csv
from .llm import AnthropicTextGenerator
from .pipeline import AnalysisBundle, run_analysis
from .statements import CashPosition
from .views import (
    anomalies_to_dataframe,
    insights_to_dataframe,
    issues_to_dataframe,
    ratios_to_dataframe,
    trends_to_dataframe,
    variances_to_dataframe,
)

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(message)s"


def _build_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for the CLI."""
    ap = argparse.ArgumentParser(
        prog="python -m smb_pulse.cli",
        description=(
            "SMB Pulse - Business health interpretation for SMBs. "
            "Computes variances, health signals, trends and anomalies from "
            "period statements, turns them into prioritized issues and "
            "plain-language insights, and answers questions about them."
        ),
    )

    # Generic options
    ap.add_argument(
        "--version",
        action="store_true",
        help="Show the installed version of smb_pulse and exit.",
    )

    ap.add_argument(
        "--config",
        dest="config_path",
        help=(
            "Path to the TOML configuration file. If omitted, "
            f"'{DEFAULT_CONFIG_FILE}' in the current directory is used when it "
            "exists, built-in defaults otherwise."
        ),
    )

    ap.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )

    subparsers = ap.add_subparsers(
        dest="command",
        metavar="command",
        help="'analyze' or 'ask'.",
    )

    # ------------------------------------------------------------------
    # analyze
    # ------------------------------------------------------------------
    analyze = subparsers.add_parser(
        "analyze",
        help="Analyze period statements read from a CSV file.",
    )
    analyze.add_argument(
        "--statements",
        dest="statements_path",
        metavar="CSV_PATH",
        required=True,
        help="Long-format statements CSV (period_start, period_end, label, line, name, amount).",
    )
    analyze.add_argument(
        "--cash-balance",
        dest="cash_balance",
        type=float,
        help="Current cash balance. Enables the Cash Runway health signal.",
    )
    analyze.add_argument(
        "--previous-cash-balance",
        dest="previous_cash_balance",
        type=float,
        default=0.0,
        help="Observed cash balance at the end of the previous period.",
    )
    analyze.add_argument(
        "--cash-as-of",
        dest="cash_as_of",
        help="Date of the cash balance (YYYY-MM-DD). Defaults to the end of the current period.",
    )
    analyze.add_argument(
        "--no-llm",
        dest="no_llm",
        action="store_true",
        help="Do not call the text generator; use template insights.",
    )
    analyze.add_argument(
        "--output",
        dest="output_path",
        metavar="JSON_PATH",
        help="Write the analysis bundle to this JSON file.",
    )
    analyze.add_argument(
        "--display-mode",
        dest="display_mode",
        choices=DISPLAY_MODES,
        help="Override the display mode from the configuration.",
    )

    # ------------------------------------------------------------------
    # ask
    # ------------------------------------------------------------------
    ask = subparsers.add_parser(
        "ask",
        help="Answer a question from a saved analysis bundle.",
    )
    ask.add_argument(
        "--bundle",
        dest="bundle_path",
        metavar="JSON_PATH",
        required=True,
        help="Analysis bundle written by 'analyze --output'.",
    )
    ask.add_argument(
        "--last-synced-at",
        dest="last_synced_at",
        help=(
            "ISO timestamp of the last data sync. Defaults to the bundle "
            "generation time."
        ),
    )
    ask.add_argument("question", help="Question about your business finances.")

    return ap


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
    )


def _load_config(config_path: Optional[str]) -> AppConfig:
    if config_path:
        return load_app_config(config_path)
    if Path(DEFAULT_CONFIG_FILE).is_file():
        return load_app_config()
    return AppConfig()


def _parse_datetime(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _text_generator(config: AppConfig) -> AnthropicTextGenerator:
    llm = config.llm
    return AnthropicTextGenerator(
        model=llm.model,
        endpoint=llm.endpoint,
        timeout_seconds=llm.timeout_seconds,
        max_retries=llm.max_retries,
        api_key_env=llm.api_key_env,
    )


def _build_gateway(config: AppConfig, no_llm: bool) -> Optional[ExplanationGateway]:
    if no_llm or not config.llm.enabled:
        logger.info("Text generation disabled, using template insights.")
        return None

    generator = _text_generator(config)
    if not generator.api_key:
        logger.warning(
            "Environment variable %s is not set, using template insights.",
            config.llm.api_key_env,
        )
        return None

    return ExplanationGateway(
        generator,
        prompt_version=config.llm.prompt_version,
        max_output_tokens=config.llm.insight_max_tokens,
        temperature=config.llm.insight_temperature,
        max_workers=config.llm.max_workers,
    )


def _print_section(title: str, df) -> None:
    print()
    print(f"=== {title} ===")
    if df.empty:
        print("(none)")
    else:
        print(df.to_string(index=False))


def _render_bundle(bundle: AnalysisBundle, display_mode: str, decimals: int) -> None:
    if display_mode in {"table", "both"}:
        period = bundle.current.period
        print(
            f"Current period: {period.label} "
            f"({period.start.isoformat()} → {period.end.isoformat()})"
        )
        if bundle.previous is None:
            print("No previous period: variances are not available.")

        _print_section("Variances", variances_to_dataframe(bundle.variances))
        _print_section("Health signals", ratios_to_dataframe(bundle.ratios, decimals))
        _print_section("Trends", trends_to_dataframe(bundle.trends))
        _print_section("Anomalies", anomalies_to_dataframe(bundle.anomalies))
        _print_section("Issues", issues_to_dataframe(bundle.issues))
        _print_section("Insights", insights_to_dataframe(bundle.insights))

    if display_mode in {"json", "both"}:
        print()
        print(bundle.to_json())


def _handle_analyze(
    args: argparse.Namespace, config: AppConfig, parser: argparse.ArgumentParser
) -> None:
    csv_path = Path(args.statements_path)
    if not csv_path.is_file():
        parser.error(f"Statements CSV not found: {csv_path}")

    try:
        history = read_statements_csv(csv_path)
    except ValueError as exc:
        parser.error(str(exc))
    if not history:
        parser.error(f"No statements found in {csv_path}")

    logger.info("Loaded %d period statement(s) from %s", len(history), csv_path)

    cash_position: Optional[CashPosition] = None
    if args.cash_balance is not None:
        try:
            as_of = (
                date.fromisoformat(args.cash_as_of)
                if args.cash_as_of
                else history[-1].period.end
            )
        except ValueError:
            parser.error(f"Invalid --cash-as-of date: {args.cash_as_of!r}, expected YYYY-MM-DD.")
        cash_position = CashPosition(
            current_balance=args.cash_balance,
            previous_balance=args.previous_cash_balance,
            as_of_date=as_of,
        )

    bundle = run_analysis(
        history,
        cash_position=cash_position,
        gateway=_build_gateway(config, args.no_llm),
    )

    display_mode = args.display_mode or config.display.mode
    _render_bundle(bundle, display_mode, config.display.decimals)

    if args.output_path:
        output = Path(args.output_path)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(bundle.to_json(), encoding="utf-8")
        print(f"Wrote {output}")


def _handle_ask(
    args: argparse.Namespace, config: AppConfig, parser: argparse.ArgumentParser
) -> None:
    bundle_path = Path(args.bundle_path)
    if not bundle_path.is_file():
        parser.error(f"Analysis bundle not found: {bundle_path}")

    try:
        bundle = AnalysisBundle.from_json(bundle_path.read_text(encoding="utf-8"))
    except ValueError as exc:
        parser.error(str(exc))

    synced_raw = args.last_synced_at or bundle.generated_at
    try:
        last_synced_at = _parse_datetime(synced_raw) if synced_raw else None
    except ValueError:
        parser.error(f"Invalid --last-synced-at timestamp: {synced_raw!r}")

    service = QueryAnsweringService(
        _text_generator(config),
        max_output_tokens=config.llm.answer_max_tokens,
        temperature=config.llm.answer_temperature,
    )
    answer = service.answer(args.question, bundle.to_context())
    print(
        with_staleness_notice(
            answer,
            last_synced_at,
            datetime.now(timezone.utc),
            config.freshness.stale_after_hours,
        )
    )


def main(argv: Optional[list[str]] = None) -> None:
    """Entry point for the SMB Pulse CLI.

    Parses command-line arguments, configures logging, loads the
    configuration and dispatches to the requested subcommand.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    # --version: short-circuit and exit early.
    if args.version:
        print(f"smb_pulse version {__version__}")
        return

    _configure_logging(args.verbose)

    try:
        config = _load_config(args.config_path)
    except (FileNotFoundError, ValueError) as exc:
        parser.error(str(exc))

    if args.command == "analyze":
        _handle_analyze(args, config, parser)
    elif args.command == "ask":
        _handle_ask(args, config, parser)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
