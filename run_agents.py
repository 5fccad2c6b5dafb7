#!/usr/bin/env python3
"""
Agent Boss — Agent Runner
=========================
Thin entry-point. All logic lives in src.orchestrator.cli.

Usage:
    python3 run_agents.py                       # 2 agents, 2 work items
    python3 run_agents.py -n 3                  # 3 agents, 3 work items
    python3 run_agents.py --title "Refactor module" --auto-exit 30
"""

from src.orchestrator.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
