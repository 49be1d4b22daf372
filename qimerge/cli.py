"""Command-line interface for QImerge.

Merges Progenesis QI compound measurements with identifications per ion
mode, and optionally reconciles positive and negative mode results.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

import yaml

from . import __version__
from .data_io import (
    load_identification_table,
    load_intensity_table,
    load_sample_map,
    read_table,
    write_result,
)
from .errors import ConfigurationError, QIMergeError
from .merge import DEFAULT_SCORE_CUTOFF, KEY_COLUMN, POLARITIES, ModeResult, SingleModeMerger
from .reconcile import CrossModeReconciler

logger = logging.getLogger(__name__)

OUTPUT_FORMATS = ('csv', 'tsv', 'parquet')


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )


def load_config(config_path: Path | None) -> dict:
    """Load configuration from YAML file or return defaults."""
    defaults = {
        'merge': {
            'score_cutoff': DEFAULT_SCORE_CUTOFF,
            'reconcile': False,
            'strict_samples': True,
        },
        'layout': {
            'markers': ['Normalised abundance', 'Raw abundance'],
            # Applied to the first and second block. The first Progenesis
            # block is the normalised one.
            'block_prefixes': ['Norm_', 'Raw_'],
        },
        'reconcile': {
            'key': 'Compound_ID',
        },
        'output': {
            'format': 'csv',
        },
    }

    if config_path and config_path.exists():
        with open(config_path) as f:
            user_config = yaml.safe_load(f) or {}
        if not isinstance(user_config, dict):
            raise ConfigurationError(f"Configuration file {config_path} must contain a mapping")
        # Deep merge user config over defaults
        defaults = _deep_merge(defaults, user_config)
    elif config_path:
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    validate_config(defaults)
    return defaults


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge override dict into base dict."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def validate_config(config: dict) -> None:
    """Check configuration values, raising ConfigurationError on the first problem."""
    try:
        float(config['merge']['score_cutoff'])
    except (TypeError, ValueError):
        raise ConfigurationError(
            f"merge.score_cutoff must be numeric, got {config['merge']['score_cutoff']!r}"
        ) from None

    for name in ('markers', 'block_prefixes'):
        value = config['layout'][name]
        if not isinstance(value, (list, tuple)) or len(value) != 2:
            raise ConfigurationError(f"layout.{name} must be a list of two strings, got {value!r}")

    if not config['reconcile'].get('key'):
        raise ConfigurationError("reconcile.key must name a column")

    fmt = config['output']['format']
    if fmt not in OUTPUT_FORMATS:
        raise ConfigurationError(f"output.format must be one of {list(OUTPUT_FORMATS)}, got {fmt!r}")


def build_merger(config: dict) -> SingleModeMerger:
    return SingleModeMerger(
        markers=tuple(config['layout']['markers']),
        block_prefixes=tuple(config['layout']['block_prefixes']),
        strict_samples=bool(config['merge']['strict_samples']),
    )


def apply_overrides(config: dict, args: argparse.Namespace) -> dict:
    """Apply command-line flags on top of the loaded configuration."""
    overrides: dict = {}
    if getattr(args, 'score_cutoff', None) is not None:
        overrides.setdefault('merge', {})['score_cutoff'] = args.score_cutoff
    if getattr(args, 'reconcile', None) is not None:
        overrides.setdefault('merge', {})['reconcile'] = args.reconcile
    if getattr(args, 'format', None):
        overrides.setdefault('output', {})['format'] = args.format
    if getattr(args, 'key', None):
        overrides.setdefault('reconcile', {})['key'] = args.key
    if not overrides:
        return config
    config = _deep_merge(config, overrides)
    validate_config(config)
    return config


def generate_run_metadata(
    config: dict,
    results: dict[str, ModeResult],
    input_files: dict[str, str],
    method_log: list[str],
    n_reconciled: int | None = None,
) -> dict:
    """Build the provenance record written next to the results.

    Args:
        config: Effective configuration
        results: Merge results keyed by polarity
        input_files: Input paths keyed by role
        method_log: Processing steps performed
        n_reconciled: Row count of the reconciled table, if produced

    Returns:
        JSON-serializable metadata dictionary

    """
    modes = {}
    for mode, result in results.items():
        modes[mode] = {
            'n_identifications': result.n_identifications,
            'n_selected': result.n_selected,
            'n_rows': result.n_rows,
            'n_samples': len(result.samples),
            'skipped_samples': result.samples.skipped,
            'dropped_columns': result.dropped_columns,
            'unmatched_compounds': result.unmatched_compounds,
            'layout': {
                'annotation': list(result.layout.annotation),
                'first_block': list(result.layout.first_block),
                'second_block': list(result.layout.second_block),
            },
        }

    return {
        'qimerge_version': __version__,
        'processing_date': datetime.now(timezone.utc).isoformat(),
        'source_files': input_files,
        'processing_parameters': config,
        'modes': modes,
        'n_reconciled': n_reconciled,
        'method_log': method_log,
    }


def cmd_run(args: argparse.Namespace) -> int:
    """Merge both polarities and optionally reconcile them."""
    config = apply_overrides(load_config(Path(args.config) if args.config else None), args)
    method_log = []

    inputs = {
        'pos': (args.pos_intensity, args.pos_identification),
        'neg': (args.neg_intensity, args.neg_identification),
    }
    for mode, (intensity_path, identification_path) in inputs.items():
        if bool(intensity_path) != bool(identification_path):
            raise ConfigurationError(
                f"{mode} mode needs both --{mode}-intensity and --{mode}-identification"
            )
    modes = [mode for mode in POLARITIES if inputs[mode][0]]
    if not modes:
        raise ConfigurationError("No polarity to merge: give intensity and identification files")

    reconcile = bool(config['merge']['reconcile'])
    if reconcile and len(modes) < 2:
        raise ConfigurationError("Reconciling requires both pos and neg inputs")

    sample_map = load_sample_map(Path(args.sample_map))
    input_files = {'sample_map': str(args.sample_map)}

    merger = build_merger(config)
    cutoff = config['merge']['score_cutoff']
    results: dict[str, ModeResult] = {}
    for mode in modes:
        intensity_path, identification_path = (Path(p) for p in inputs[mode])
        input_files[f'{mode}_intensity'] = str(intensity_path)
        input_files[f'{mode}_identification'] = str(identification_path)

        result = merger.run(
            load_intensity_table(intensity_path),
            load_identification_table(identification_path),
            mode=mode,
            score_cutoff=cutoff,
            sample_map=sample_map,
        )
        results[mode] = result
        method_log.append(f"Merged {result}")

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    fmt = config['output']['format']

    for mode, result in results.items():
        write_result(result.table, output_dir / f"result_{mode}.{fmt}", key=KEY_COLUMN)

    n_reconciled = None
    if reconcile:
        key = config['reconcile']['key']
        reconciled = CrossModeReconciler(key=key).reconcile(
            results['pos'].table, results['neg'].table
        )
        n_reconciled = len(reconciled)
        write_result(reconciled, output_dir / f"result_merged.{fmt}", key=key)
        method_log.append(f"Reconciled pos/neg by {key}: {n_reconciled} rows")

    metadata = generate_run_metadata(
        config=config,
        results=results,
        input_files=input_files,
        method_log=method_log,
        n_reconciled=n_reconciled,
    )
    metadata_output = output_dir / "metadata.json"
    with open(metadata_output, 'w') as f:
        json.dump(metadata, f, indent=2, default=str)
    logger.info(f"Saved run metadata to {metadata_output}")

    logger.info("=" * 60)
    logger.info("QImerge complete")
    logger.info("=" * 60)
    for step in method_log:
        logger.info(f"  {step}")
    logger.info(f"Output directory: {output_dir}")

    return 0


def cmd_merge(args: argparse.Namespace) -> int:
    """Merge a single polarity."""
    config = apply_overrides(load_config(Path(args.config) if args.config else None), args)

    result = build_merger(config).run(
        load_intensity_table(Path(args.intensity)),
        load_identification_table(Path(args.identification)),
        mode=args.mode,
        score_cutoff=config['merge']['score_cutoff'],
        sample_map=load_sample_map(Path(args.sample_map)),
    )
    write_result(result.table, Path(args.output), key=KEY_COLUMN)
    logger.info(f"Merged {result}")
    return 0


def cmd_reconcile(args: argparse.Namespace) -> int:
    """Reconcile two previously merged result tables."""
    config = apply_overrides(load_config(Path(args.config) if args.config else None), args)
    key = config['reconcile']['key']

    reconciled = CrossModeReconciler(key=key).reconcile(
        read_table(Path(args.pos)),
        read_table(Path(args.neg)),
    )
    write_result(reconciled, Path(args.output), key=key)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='qimerge',
        description='QImerge: merge Progenesis QI metabolomics measurements and identifications\n\n'
                    'Primary usage:\n'
                    '  qimerge run --sample-map samples.xlsx \\\n'
                    '      --pos-intensity pos_measurements.csv --pos-identification pos_ids.csv \\\n'
                    '      --neg-intensity neg_measurements.csv --neg-identification neg_ids.csv \\\n'
                    '      -o results/ --reconcile',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Verbose output')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    run_parser = subparsers.add_parser(
        'run',
        help='Merge both polarities and optionally reconcile them (recommended)',
        description='Merge positive and/or negative mode data and write result_pos, '
                    'result_neg and (with --reconcile) result_merged tables.',
    )
    run_parser.add_argument('-s', '--sample-map', required=True,
                            help='Sample map with pos.name, neg.name and unique.name columns')
    run_parser.add_argument('--pos-intensity', help='Positive mode compound measurements')
    run_parser.add_argument('--pos-identification', help='Positive mode identifications')
    run_parser.add_argument('--neg-intensity', help='Negative mode compound measurements')
    run_parser.add_argument('--neg-identification', help='Negative mode identifications')
    run_parser.add_argument('-o', '--output-dir', required=True, help='Output directory for results')
    run_parser.add_argument('-c', '--config', help='Configuration YAML file')
    run_parser.add_argument('--score-cutoff', type=float, help='Minimum MS1 Score (default 0)')
    run_parser.add_argument('--reconcile', action=argparse.BooleanOptionalAction, default=None,
                            help='Keep the best record per compound across pos/neg '
                                 '(overrides merge.reconcile)')
    run_parser.add_argument('--format', choices=OUTPUT_FORMATS, help='Output table format')

    merge_parser = subparsers.add_parser('merge', help='Merge a single polarity')
    merge_parser.add_argument('-m', '--mode', required=True, choices=POLARITIES, help='Ion mode')
    merge_parser.add_argument('--intensity', required=True, help='Compound measurements')
    merge_parser.add_argument('--identification', required=True, help='Identifications')
    merge_parser.add_argument('-s', '--sample-map', required=True, help='Sample map')
    merge_parser.add_argument('-o', '--output', required=True, help='Output table (.csv/.tsv/.parquet)')
    merge_parser.add_argument('-c', '--config', help='Configuration YAML file')
    merge_parser.add_argument('--score-cutoff', type=float, help='Minimum MS1 Score (default 0)')

    reconcile_parser = subparsers.add_parser('reconcile', help='Reconcile two merged result tables')
    reconcile_parser.add_argument('pos', help='Merged positive mode table')
    reconcile_parser.add_argument('neg', help='Merged negative mode table')
    reconcile_parser.add_argument('-o', '--output', required=True, help='Output table')
    reconcile_parser.add_argument('-c', '--config', help='Configuration YAML file')
    reconcile_parser.add_argument('--key', help='Compound identifier column (default Compound_ID)')

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    commands = {
        'run': cmd_run,
        'merge': cmd_merge,
        'reconcile': cmd_reconcile,
    }
    if args.command not in commands:
        parser.print_help()
        return 1

    try:
        return commands[args.command](args)
    except QIMergeError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
