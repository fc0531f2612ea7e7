#!/usr/bin/env python3
import logging

import click
import fs.errors
from pyftpdlib.log import config_logging

from config_loader import Config
from ftp_server import create_ftp_server
from gcs_driver import GCSDriverFactory, LocalSession


DEFAULT_CONFIG = ".conf/config.yaml"


def format_entry(info):
    """One ``ls -l`` like line for a FileInfo"""
    kind = "d" if info.is_dir else "-"
    mtime = info.modified.strftime("%Y-%m-%d %H:%M")
    return f"{kind}rwxrwxrwx {info.owner:<8} {info.size:>10} {mtime} {info.name}"


def open_driver(config, user):
    driver = GCSDriverFactory.from_config(config).new_driver()
    driver.init(LocalSession(user))
    return driver


@click.group()
@click.option("--config", "config_filename", default=DEFAULT_CONFIG, show_default=True, help="Config file.")
@click.pass_context
def cli(ctx, config_filename):
    """FTP server storing its files in a Google Cloud Storage bucket."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = Config(config_filename=config_filename)


@cli.command()
@click.pass_context
def serve(ctx):
    """Serve the bucket over FTP until interrupted."""
    config = ctx.obj["config"]
    config_logging(level=getattr(logging, config.log_level, logging.INFO))
    server = create_ftp_server(config, GCSDriverFactory.from_config(config))
    try:
        server.serve_forever(handle_exit=False)
    except (SystemExit, KeyboardInterrupt):
        click.echo("FTP Server shutting down.")
        server.close_all()


@cli.command()
@click.argument("path", default="/")
@click.option("-u", "--user", default="anonymous", help="Login user the listing is made for.")
@click.pass_context
def ls(ctx, path, user):
    """List a directory of the bucket."""
    driver = open_driver(ctx.obj["config"], user)
    try:
        driver.list_dir(path, lambda info: click.echo(format_entry(info)))
    except fs.errors.FSError as e:
        raise click.ClickException(str(e))


@cli.command()
@click.argument("path")
@click.option("-u", "--user", default="anonymous", help="Login user the entry is attributed to.")
@click.pass_context
def stat(ctx, path, user):
    """Show the metadata of a file or directory."""
    driver = open_driver(ctx.obj["config"], user)
    try:
        info = driver.stat(path).to_info()
    except fs.errors.FSError as e:
        raise click.ClickException(str(e))
    click.echo(f"name: {info.name}")
    click.echo(f"type: {'directory' if info.is_dir else 'file'}")
    click.echo(f"size: {info.size}")
    click.echo(f"modified: {info.modified.isoformat()}")
    click.echo(f"owner: {info.user}")


if __name__ == "__main__":
    cli()
