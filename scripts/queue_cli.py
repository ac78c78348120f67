#!/usr/bin/env python3
"""Interactive front-desk CLI for the clinic queue service."""

import os
import sys
from datetime import date

import httpx
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

STATUS_STYLES = {
    "WAITING": "[yellow]⏳ En attente[/yellow]",
    "IN_ROOM": "[blue]🩺 En consultation[/blue]",
    "FINISHED": "[green]✅ Terminé[/green]",
}


class QueueCLI:
    """Terminal board for today's queue."""

    def __init__(self, base_url: str = "http://localhost:8000", session_id: str | None = None):
        """Initialize queue CLI.

        Args:
            base_url: Address of a running clinic queue service
            session_id: Admin session id sent as X-Session-Id
        """
        self.base_url = base_url
        self.console = Console()
        headers = {"X-Session-Id": session_id} if session_id else {}
        self.client = httpx.Client(base_url=base_url, headers=headers, timeout=10.0)
        self.visit_ids: dict[int, str] = {}

    def start(self) -> None:
        """Start the interactive loop."""
        self.console.print(
            Panel.fit(
                "[bold blue]🏥 Clinic Queue - Front Desk[/bold blue]\n"
                "Commands: /board, /patients [search], /enqueue <phone> [reason], /next <n>, /help, /quit",
                border_style="blue",
            )
        )

        if not self._test_connection():
            self.console.print(f"[red]❌ Cannot connect to the service at {self.base_url}.[/red]")
            return

        self._show_board()

        try:
            while True:
                user_input = Prompt.ask("\n[bold cyan]queue[/bold cyan]").strip()
                command, _, argument = user_input.partition(" ")
                command = command.lower()

                if command in ["/quit", "/exit", "quit", "exit"]:
                    break
                elif command == "/help":
                    self._show_help()
                elif command in ["/board", ""]:
                    self._show_board()
                elif command == "/patients":
                    self._show_patients(argument.strip() or None)
                elif command == "/enqueue":
                    self._enqueue(argument.strip())
                elif command == "/next":
                    self._advance(argument.strip())
                else:
                    self.console.print(f"[yellow]Unknown command {command}, try /help[/yellow]")

        except KeyboardInterrupt:
            pass
        finally:
            self.console.print("\n[yellow]👋 Goodbye![/yellow]")
            self.client.close()

    def _test_connection(self) -> bool:
        """Test connection to the service."""
        try:
            response = self.client.get("/health")
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    def _request(self, method: str, path: str, **kwargs) -> dict | None:
        """Send a request and print any error the service returns."""
        try:
            response = self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            self.console.print(f"[red]❌ Connection error: {e}[/red]")
            return None

        if response.status_code >= 400:
            detail = response.json().get("detail", response.text) if response.content else response.text
            self.console.print(f"[red]❌ {response.status_code}: {detail}[/red]")
            return None
        return response.json()

    def _show_board(self) -> None:
        """Render today's visits grouped by status order."""
        data = self._request("GET", "/visits", params={"date": date.today().isoformat()})
        if data is None:
            return

        table = Table(title="File d'attente du jour")
        table.add_column("N°", justify="right", style="bold")
        table.add_column("Patient")
        table.add_column("Téléphone")
        table.add_column("Statut")
        table.add_column("Raison", style="dim")

        self.visit_ids = {}
        for visit in data["visits"]:
            patient = visit.get("patient") or {}
            self.visit_ids[visit["queue_number"]] = visit["id"]
            table.add_row(
                str(visit["queue_number"]),
                patient.get("name", visit["patient_name"]),
                patient.get("phone", visit["patient_phone"]),
                STATUS_STYLES.get(visit["status"], visit["status"]),
                visit.get("reason") or "",
            )

        stats = data["stats"]
        self.console.print(table)
        self.console.print(
            f"[bold]{stats['total']}[/bold] visites · {stats['waiting']} en attente · "
            f"{stats['in_room']} en consultation · {stats['finished']} terminées"
        )

    def _show_patients(self, search: str | None) -> None:
        params = {"search": search} if search else {}
        data = self._request("GET", "/patients", params=params)
        if data is None:
            return

        table = Table(title=f"Patients ({data['total']})")
        table.add_column("Nom")
        table.add_column("Téléphone")
        table.add_column("Email")
        table.add_column("Visites", justify="right")
        for patient in data["patients"]:
            table.add_row(
                patient["name"], patient["phone"], patient.get("email") or "", str(patient.get("visit_count") or 0)
            )
        self.console.print(table)

    def _enqueue(self, argument: str) -> None:
        """Enqueue a patient found by exact phone number."""
        phone, _, reason = argument.partition(" ")
        if not phone:
            self.console.print("[yellow]Usage: /enqueue <phone> [reason][/yellow]")
            return

        data = self._request("GET", "/patients", params={"search": phone})
        if data is None:
            return
        matches = [p for p in data["patients"] if p["phone"] == phone]
        if not matches:
            self.console.print(f"[red]❌ No patient with phone {phone}[/red]")
            return

        payload = {"patient_id": matches[0]["id"], "reason": reason.strip() or None}
        created = self._request("POST", "/visits", json=payload)
        if created:
            visit = created["visit"]
            self.console.print(f"[green]✅ {visit['patient_name']} enqueued as #{visit['queue_number']}[/green]")
            self._show_board()

    def _advance(self, argument: str) -> None:
        """Advance the visit holding a queue number on the current board."""
        if not argument.isdigit() or int(argument) not in self.visit_ids:
            self.console.print("[yellow]Usage: /next <queue number shown on the board>[/yellow]")
            return

        updated = self._request("POST", f"/visits/{self.visit_ids[int(argument)]}/advance")
        if updated:
            visit = updated["visit"]
            self.console.print(f"#{visit['queue_number']} → {STATUS_STYLES[visit['status']]}")
            self._show_board()

    def _show_help(self) -> None:
        """Show help information."""
        help_text = """
[bold]Available Commands:[/bold]
• /board - Show today's queue
• /patients [search] - List patients, optionally filtered by name, phone or email
• /enqueue <phone> [reason] - Add the patient with this phone to today's queue
• /next <n> - Move visit #n to its next status
• /quit or /exit - Exit

[bold]Tips:[/bold]
• Set CLINIC_SESSION_ID (or pass it as the second argument) to authenticate
• Start the server with CLINIC_BOOTSTRAP_ADMIN=admin to get a session id in its log
        """

        self.console.print(Panel(help_text.strip(), title="[cyan]❓ Help[/cyan]", border_style="cyan"))


def main():
    """Main entry point for the queue CLI."""
    base_url = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:8000"
    session_id = sys.argv[2] if len(sys.argv) > 2 else os.getenv("CLINIC_SESSION_ID")

    cli = QueueCLI(base_url, session_id)
    cli.start()


if __name__ == "__main__":
    main()
