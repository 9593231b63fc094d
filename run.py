#!/usr/bin/env python3
"""Run Backubrr from a source checkout"""
from backubrr.cli import main

if __name__ == '__main__':
    # Same as the installed `backubrr` command
    main()
