#!/usr/bin/env python3
"""
Launch Database Stats Tool
Stats viewer and CSV exporter for the launch database
"""

import csv
import os
import sqlite3
import sys
from datetime import datetime
from typing import Optional

from dotenv import load_dotenv

from launchpad.database import LaunchDatabase
from launchpad.models import LaunchState

EXPORT_TABLES = ["launches", "launch_attempts", "launch_transitions"]

# ANSI color codes (disable on Windows if issues)
ENABLE_COLORS = os.name != 'nt' or os.environ.get('ANSICON')


class Colors:
    if ENABLE_COLORS:
        GREEN = '\033[92m'
        YELLOW = '\033[93m'
        RED = '\033[91m'
        CYAN = '\033[96m'
        BOLD = '\033[1m'
        ENDC = '\033[0m'
    else:
        GREEN = YELLOW = RED = CYAN = BOLD = ENDC = ''


def default_db_path() -> str:
    load_dotenv()
    return os.getenv('LAUNCH_DB_PATH', 'launches.db')


def print_section(title: str):
    """Print section header"""
    print(f"\n{Colors.CYAN}{Colors.BOLD}{title}{Colors.ENDC}")
    print("-" * 40)


def _open(db_path: str) -> Optional[LaunchDatabase]:
    if not os.path.exists(db_path):
        print(f"{Colors.RED}❌ Database not found: {db_path}{Colors.ENDC}")
        return None
    return LaunchDatabase(db_path)


def quick_stats(db_path: str):
    """Display quick overview stats"""
    db = _open(db_path)
    if db is None:
        return

    stats = db.get_launch_stats()

    print(f"\n{Colors.BOLD}{'='*60}{Colors.ENDC}")
    print(f"{Colors.BOLD}LAUNCHPAD - QUICK STATS{Colors.ENDC}".center(60))
    print(f"{Colors.BOLD}{'='*60}{Colors.ENDC}")

    print_section("📊 LAUNCHES")
    by_state = stats['by_state']
    print(f"Total: {stats['total_launches']:,} | Completed: {by_state.get('completed', 0):,} | "
          f"Failed: {by_state.get('failed', 0):,} | Last 24h: {stats['launches_24h']}")

    in_flight = sum(n for state, n in by_state.items() if not LaunchState(state).is_terminal)
    if in_flight:
        print(f"{Colors.YELLOW}In flight: {in_flight}{Colors.ENDC}")

    print_section("🚀 RECENT LAUNCHES")
    for record in db.list_launches(limit=5):
        created = record.created_at.strftime("%m/%d %H:%M") if record.created_at else "-"
        print(f"${record.request.token_symbol:<8} {record.tier_config.name:<8} {record.state.value:<22} ({created})")


def detailed_stats(db_path: str):
    """Display state, failure and attempt breakdowns"""
    db = _open(db_path)
    if db is None:
        return

    stats = db.get_launch_stats()

    print(f"\n{Colors.BOLD}{'='*70}{Colors.ENDC}")
    print(f"{Colors.BOLD}LAUNCHPAD - DETAILED STATISTICS{Colors.ENDC}".center(70))
    print(f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}".center(70))
    print(f"{Colors.BOLD}{'='*70}{Colors.ENDC}")

    print_section("📊 LAUNCHES BY STATE")
    for state in LaunchState:
        count = stats['by_state'].get(state.value, 0)
        if count:
            print(f"{state.value:<24} {count:>6,}")

    print_section("❌ FAILURES BY STEP")
    if not stats['failed_at']:
        print(f"{Colors.GREEN}No failed launches{Colors.ENDC}")
    for failed_at, count in sorted(stats['failed_at'].items(), key=lambda item: -item[1]):
        print(f"after {failed_at or '-':<18} {count:>6,}")

    print_section("🔁 STEP ATTEMPTS")
    for (step, outcome), count in sorted(stats['attempts'].items()):
        color = Colors.GREEN if outcome in ('success', 'found') else Colors.YELLOW
        print(f"{step:<20} {color}{outcome:<10}{Colors.ENDC} {count:>6,}")

    print_section("⚠️  FAILED LAUNCHES WITH A MINTED TOKEN")
    stranded = [r for r in db.list_launches(state=LaunchState.FAILED, limit=1000) if r.token_exists]
    if not stranded:
        print("None")
    for record in stranded:
        print(f"{record.launch_id} ${record.request.token_symbol} {record.mint_address} "
              f"({record.error.step}: {record.error.message})")


def export_data(db_path: str, export_dir: Optional[str] = None) -> Optional[str]:
    """Export database to CSV files"""
    if not os.path.exists(db_path):
        print(f"{Colors.RED}❌ Database not found: {db_path}{Colors.ENDC}")
        return None

    export_dir = export_dir or f"launch_export_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
    os.makedirs(export_dir, exist_ok=True)

    print(f"\n📁 Exporting to: {export_dir}/")
    print("="*50)

    exported_count = 0
    conn = sqlite3.connect(db_path)
    try:
        for table in EXPORT_TABLES:
            cursor = conn.execute("SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,))
            if not cursor.fetchone():
                continue

            # Logos are binary; export the size instead
            columns = [row[1] for row in conn.execute(f"PRAGMA table_info({table})")]
            select = ", ".join("length(logo) AS logo_bytes" if c == 'logo' else c for c in columns)
            cursor = conn.execute(f"SELECT {select} FROM {table}")
            rows = cursor.fetchall()
            if not rows:
                continue

            filename = os.path.join(export_dir, f"{table}.csv")
            with open(filename, 'w', newline='', encoding='utf-8') as f:
                writer = csv.writer(f)
                writer.writerow([description[0] for description in cursor.description])
                writer.writerows(rows)

            print(f"✅ {table}.csv - {len(rows)} rows")
            exported_count += 1
    finally:
        conn.close()

    if exported_count == 0:
        print(f"{Colors.YELLOW}⚠️  No data to export{Colors.ENDC}")
        os.rmdir(export_dir)
        return None

    with open(os.path.join(export_dir, "SUMMARY.txt"), 'w') as f:
        f.write("Launch Database Export\n")
        f.write(f"Generated: {datetime.now()}\n")
        f.write(f"Files exported: {exported_count}\n")

    print(f"\n✅ Export complete! {exported_count} tables exported.")
    return export_dir


def main(db_path: str):
    """Main menu"""
    while True:
        print(f"\n{Colors.BOLD}📊 LAUNCH DATABASE STATS{Colors.ENDC}")
        print("="*35)
        print("1. Quick Stats")
        print("2. Detailed Analysis")
        print("3. Export to CSV")
        print("0. Exit")

        choice = input(f"\n{Colors.CYAN}Select option: {Colors.ENDC}")

        if choice == "1":
            quick_stats(db_path)
        elif choice == "2":
            detailed_stats(db_path)
        elif choice == "3":
            export_data(db_path)
        elif choice == "0":
            print(f"{Colors.GREEN}Goodbye!{Colors.ENDC}")
            break
        else:
            print(f"{Colors.RED}Invalid option!{Colors.ENDC}")

        if choice in ["1", "2", "3"]:
            input(f"\n{Colors.YELLOW}Press Enter to continue...{Colors.ENDC}")


if __name__ == "__main__":
    path = default_db_path()
    # If run with argument, do quick stats and exit
    if len(sys.argv) > 1 and sys.argv[1] == "--quick":
        quick_stats(path)
    elif len(sys.argv) > 1 and sys.argv[1] == "--export":
        export_data(path)
    else:
        main(path)
