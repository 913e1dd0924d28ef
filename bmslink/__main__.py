#!/usr/bin/env python3
"""Command-line interface for bmslink"""

import argparse
import asyncio
import logging
from datetime import datetime
from typing import Optional

from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.table import Table
from rich.text import Text

from . import BmsSession, create_session
from .discover import discover_devices
from .errors import TransportError
from .models import FaultKind, FaultReport, LinkState

DEMO_FAULTS = [
    FaultReport(FaultKind.OVERVOLTAGE, "Cell 3 voltage exceeded 4.25V"),
    FaultReport(FaultKind.OVERTEMPERATURE, "Battery temperature reached 45°C"),
    FaultReport(FaultKind.CELL_IMBALANCE, "Cell voltage difference > 0.2V"),
    FaultReport(FaultKind.OVERCURRENT, "Discharge current exceeded 50A"),
    FaultReport(FaultKind.COMMUNICATION_ERROR, "Lost connection to BMS controller"),
]

STATE_STYLE = {
    LinkState.CONNECTED: "green",
    LinkState.AWAITING_RESPONSE: "yellow",
    LinkState.DISCONNECTED: "red bold",
}


def create_dashboard(session: BmsSession, status_message: str | Text = "") -> Layout:
    """Create a dashboard layout with pack, cell and fault tables."""
    layout = Layout()
    reading = session.current

    pack_table = Table(title="Pack Status")
    pack_table.add_column("Parameter")
    pack_table.add_column("Value")
    pack_table.add_row("Device", reading.device_name if reading else (session.aggregator.device_name or "-"))
    pack_table.add_row("Link", Text(session.state.name, style=STATE_STYLE[session.state]))
    if reading:
        pack_table.add_row("Voltage", f"{reading.total_voltage:.3f}V")
        pack_table.add_row("Current", f"{reading.current:.3f}A")
        pack_table.add_row("Power", f"{reading.total_voltage * reading.current:.1f}W")
        pack_table.add_row("State of Charge", f"{reading.soc:.0f}%")
        pack_table.add_row("Temperature", f"{reading.temperature:.0f}°C")

    cell_table = Table(title="Cells")
    cell_table.add_column("Cell")
    cell_table.add_column("Voltage")
    if reading and reading.cells:
        low = min(c.voltage for c in reading.cells)
        high = max(c.voltage for c in reading.cells)
        for cell in reading.cells:
            style = "cyan" if cell.voltage == high else "magenta" if cell.voltage == low else ""
            cell_table.add_row(str(cell.cell_number), Text(f"{cell.voltage:.3f}V", style=style))
        cell_table.add_row("Δ", f"{high - low:.3f}V")

    fault_table = Table(title="Warnings")
    fault_table.add_column("Time")
    fault_table.add_column("Type")
    fault_table.add_column("Details")
    for fault in session.fault_log[:10]:
        fault_table.add_row(
            fault.timestamp.strftime('%H:%M:%S'),
            Text(fault.kind.value, style="red"),
            fault.details or "",
        )

    header = Table.grid(padding=(0, 1))
    header.add_column("timestamp", justify="left")
    header.add_column("status", justify="right", width=40)

    if isinstance(status_message, str):
        status_text = Text(status_message, style="yellow bold")
    else:
        status_text = status_message

    current_time = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
    last_update = reading.timestamp.strftime('%Y-%m-%d %H:%M:%S') if reading else "Never"
    header.add_row(Text(f"Local Time: {current_time}\nLast Update: {last_update}", style="white"), status_text)

    layout.split_column(
        Layout(header),
        Layout(name="content", ratio=10)
    )
    layout["content"].split_row(
        Layout(pack_table, name="pack"),
        Layout(cell_table, name="cells"),
        Layout(fault_table, name="faults", ratio=2),
    )
    return layout


def print_single_update(session: BmsSession, console: Console) -> None:
    """Print a single update in simple format."""
    reading = session.current
    if reading is None:
        console.print("[red]No data received from BMS")
        return

    console.print(f"\n[bold]{reading.device_name}")
    console.print(f"Voltage: {reading.total_voltage:.3f}V")
    console.print(f"Current: {reading.current:.3f}A")
    console.print(f"State of Charge: {reading.soc:.0f}%")
    console.print(f"Temperature: {reading.temperature:.0f}°C")
    for cell in reading.cells:
        console.print(f"Cell {cell.cell_number}: {cell.voltage:.3f}V")

    if session.fault_log:
        console.print("\n[bold]Warnings")
        for fault in session.fault_log:
            console.print(f"{fault.timestamp:%H:%M:%S} {fault.kind.value} {fault.details or ''}")


async def monitor(address: str, interval: int, continuous: bool, demo_faults: bool) -> int:
    console = Console()
    session = create_session(address)
    try:
        await session.transport.connect()
        if not await session.attach():
            console.print("[red]Required characteristics not found")
            return 1

        if demo_faults:
            for report in DEMO_FAULTS:
                await session.record_fault(report)

        if not continuous:
            session.request_data()
            await asyncio.sleep(session.supervisor.response_timeout)
            await session.drain()
            print_single_update(session, console)
            return 0

        with Live(console=console, screen=True, refresh_per_second=4) as live:
            while session.state is not LinkState.DISCONNECTED:
                session.request_data()
                for remaining in range(interval, 0, -1):
                    live.update(create_dashboard(session, f"Next update in {remaining} seconds..."))
                    await asyncio.sleep(1)
            live.update(create_dashboard(session, Text("Link lost", style="red")))
        return 1
    except TransportError as e:
        console.print(f"[red]Error: {e}")
        return 1
    finally:
        await session.close()


async def main() -> int:
    parser = argparse.ArgumentParser(description='BMS Bluetooth Monitor')
    parser.add_argument('address', nargs='?', help='Bluetooth address of the BMS')
    parser.add_argument('--scan', action='store_true', help='List nearby BMS devices and exit')
    parser.add_argument('--interval', type=int, default=5, help='Update interval in seconds (default: 5)')
    parser.add_argument('--continuous', action='store_true', help='Show continuous dashboard view (default: False)')
    parser.add_argument('--demo-faults', action='store_true', help='Inject sample warnings into the fault log')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    args = parser.parse_args()

    log_level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    console = Console()
    address: Optional[str] = args.address
    if args.scan or not address:
        devices = await discover_devices()
        for device in devices:
            console.print(f"{device['name']}  {device['address']}")
        if args.scan:
            return 0
        if not devices:
            console.print("[red]Error: Could not discover a BMS")
            return 1
        address = devices[0]['address']
        console.print(f"Using {devices[0]['name']} at {address}")

    return await monitor(address, args.interval, args.continuous, args.demo_faults)


def run() -> int:
    try:
        return asyncio.run(main())
    except KeyboardInterrupt:
        Console().print("\nMonitoring stopped by user")
        return 0


if __name__ == "__main__":
    raise SystemExit(run())
