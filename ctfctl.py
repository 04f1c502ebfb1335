#!/usr/bin/env python3
"""
CLI tool for the CTFd manager
Inspects challenge ConfigMaps and drives CTFd through the manager's HTTP API
"""

import click
import requests
import json
import yaml
from tabulate import tabulate

API_BASE_URL = "http://localhost:8080"


class CTFManagerCLI:
    """CLI client for the CTFd manager"""

    def __init__(self, base_url: str = API_BASE_URL, token: str = ""):
        self.base_url = base_url.rstrip("/")
        self.token = token

    def _make_request(self, method: str, endpoint: str, **kwargs):
        """Make HTTP request to the API"""
        url = f"{self.base_url}{endpoint}"
        headers = kwargs.pop("headers", {})
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            response = requests.request(method, url, headers=headers, **kwargs)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            click.echo(f"Error: {e}", err=True)
            if hasattr(e, "response") and e.response is not None:
                try:
                    error_detail = e.response.json()
                    click.echo(f"Detail: {error_detail}", err=True)
                except (ValueError, json.JSONDecodeError):
                    click.echo(f"Response: {e.response.text}", err=True)
            return None

    def get_status(self):
        """Fetch health; an unhealthy manager answers 500 with a JSON body"""
        try:
            response = requests.get(f"{self.base_url}/api/status")
            return response.json()
        except requests.exceptions.RequestException as e:
            click.echo(f"Error: {e}", err=True)
            return None


def _dump(result, output):
    if output == "yaml":
        click.echo(yaml.dump(result, default_flow_style=False))
    else:
        click.echo(json.dumps(result, indent=2))


@click.group()
@click.option(
    "--url",
    envvar="CTF_MANAGER_URL",
    default=API_BASE_URL,
    show_default=True,
    help="Base URL of the CTFd manager",
)
@click.option(
    "--token", envvar="CTF_MANAGER_TOKEN", default="", help="API password"
)
@click.pass_context
def cli(ctx, url, token):
    """CTFd manager CLI - inspect challenges and sync them to CTFd"""
    ctx.obj = CTFManagerCLI(url, token)


@cli.command()
@click.pass_obj
def challenges(client):
    """List challenge ConfigMaps"""
    result = client._make_request("GET", "/api/challenges")

    if result:
        rows = [[c["name"]] for c in result.get("challenges", [])]
        click.echo(tabulate(rows, headers=["Name"], tablefmt="grid"))


@cli.command()
@click.argument("name")
@click.option("--output", "-o", type=click.Choice(["json", "yaml"]), default="json")
@click.pass_obj
def describe(client, name, output):
    """Describe a challenge"""
    result = client._make_request("GET", f"/api/challenges/{name}")

    if result:
        _dump(result["config"], output)


@cli.command()
@click.argument("name")
@click.pass_obj
def files(client, name):
    """List the attachments of a challenge"""
    result = client._make_request("GET", f"/api/challenges/{name}/files")

    if result:
        rows = [
            [f.get("name"), f.get("type"), f.get("size")]
            for f in result.get("files", [])
        ]
        click.echo(tabulate(rows, headers=["Name", "Type", "Size"], tablefmt="grid"))


@cli.command("upload-all")
@click.confirmation_option(prompt="Upload every challenge to CTFd?")
@click.pass_obj
def upload_all(client):
    """Create or update every challenge in CTFd"""
    result = client._make_request("POST", "/api/ctfd/challenges/init")

    if result:
        click.echo("All challenges uploaded")


@cli.command()
@click.option(
    "--output", "-o", type=click.Choice(["table", "json", "yaml"]), default="table"
)
@click.pass_obj
def remote(client, output):
    """List challenges as CTFd sees them"""
    result = client._make_request("GET", "/api/ctfd/challenges")

    if result:
        entries = result.get("challenges") or []
        if output != "table":
            _dump(entries, output)
            return

        headers = ["ID", "Name", "Category", "Value", "State", "Type"]
        rows = [
            [
                c.get("id"),
                c.get("name"),
                c.get("category"),
                c.get("value"),
                c.get("state"),
                c.get("type"),
            ]
            for c in entries
        ]
        click.echo(tabulate(rows, headers=headers, tablefmt="grid"))


@cli.command()
@click.pass_obj
def uploaded(client):
    """Show which challenges are bound to a CTFd id"""
    result = client._make_request("GET", "/api/ctfd/challenges/uploaded")

    if result:
        rows = [
            [slug, remote_id if remote_id != "0" else "-"]
            for slug, remote_id in sorted(result.get("uploaded_challenges", {}).items())
        ]
        click.echo(tabulate(rows, headers=["Slug", "CTFd ID"], tablefmt="grid"))


@cli.command()
@click.argument("filename", type=click.Path(exists=True))
@click.pass_obj
def setup(client, filename):
    """Set up a fresh CTFd from a YAML/JSON file"""
    with open(filename, "r") as f:
        if filename.endswith(".yaml") or filename.endswith(".yml"):
            data = yaml.safe_load(f)
        else:
            data = json.load(f)

    result = client._make_request("POST", "/api/ctfd/setup", json=data)

    if result:
        click.echo("CTFd set up successfully!")


@cli.command()
@click.pass_obj
def status(client):
    """Show health of the manager"""
    result = client.get_status()

    if result:
        healthy = result.get("status") == "ok"
        click.echo(f"Status: {result.get('status')}")
        click.echo("✓ Watching ConfigMaps" if healthy else "✗ Manager is unhealthy")


@cli.command()
@click.pass_obj
def version(client):
    """Show the manager version"""
    result = client._make_request("GET", "/api/version")

    if result:
        click.echo(result["version"])


if __name__ == "__main__":
    cli()
