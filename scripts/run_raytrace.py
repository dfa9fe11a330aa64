#!/usr/bin/env python3
"""kerrlight ray tracer runner.

Usage:
    python scripts/run_raytrace.py scripts/user_config.py
    python scripts/run_raytrace.py scripts/user_config.py --snapshots 0 1 2
    python scripts/run_raytrace.py scripts/user_config.py --geodesic-save --geodesic-file geo.nc

Note: User config in scripts/user_config.py, expert defaults in kerrlight.schemas.param
"""

import argparse

from kerrlight.cli.run_raytrace import run_raytrace


def main():
    parser = argparse.ArgumentParser(description="Run the kerrlight ray tracer")
    parser.add_argument("config", help="Path to user config file")
    parser.add_argument("--snapshots", type=int, nargs="+", help="Snapshot indices (default: 0)")
    parser.add_argument("--num-threads", type=int, help="Worker threads")
    parser.add_argument("--output-dir", help="Output directory")
    parser.add_argument("--geodesic-save", action="store_true", default=None,
                        help="Save root geodesics to --geodesic-file")
    parser.add_argument("--geodesic-load", action="store_true", default=None,
                        help="Load root geodesics from --geodesic-file")
    parser.add_argument("--geodesic-file", help="Geodesic checkpoint file")
    parser.add_argument("--sample-save", action="store_true", default=None,
                        help="Save root samples to --sample-file")
    parser.add_argument("--sample-load", action="store_true", default=None,
                        help="Load root samples from --sample-file")
    parser.add_argument("--sample-file", help="Sample checkpoint file")
    parser.add_argument("--plot", dest="save_plot", action="store_true", default=None,
                        help="Save a quick-look PNG per snapshot")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    cli_args = {
        "num_threads": args.num_threads,
        "output_dir": args.output_dir,
        "geodesic_save": args.geodesic_save,
        "geodesic_load": args.geodesic_load,
        "geodesic_file": args.geodesic_file,
        "sample_save": args.sample_save,
        "sample_load": args.sample_load,
        "sample_file": args.sample_file,
        "save_plot": args.save_plot,
    }
    stats = run_raytrace(args.config, cli_args=cli_args, snapshots=args.snapshots,
                         verbose=args.verbose)
    print(stats.to_string(index=False))


if __name__ == "__main__":
    main()
