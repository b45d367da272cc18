#!/usr/bin/env python
"""CLI entry point for the hyper tree grid resampler."""

from hypertree_resampler.pipeline import main

if __name__ == "__main__":
    main()
