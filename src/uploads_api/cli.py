# cli.py
import logging

import click

from uploads_api.settings import get_settings

# Configure logging
logger = logging.getLogger(__name__)

@click.group()
def cli():
    """CLI commands for the Uploads API"""
    pass

@cli.command()
def show_config():
    """Show current configuration"""
    settings = get_settings()

    print("Current Configuration:")
    print(f"  Storage Backend: {settings.storage_backend}")
    print(f"  Storage Dir: {settings.storage_dir}")
    print(f"  Database: {settings.database_path}")
    print(f"  AWS Region: {settings.aws_region}")
    print(f"  AWS Endpoint: {settings.aws_endpoint_url}")
    print(f"  S3 Bucket: {settings.s3_bucket_name}")
    print(f"  Max File Size: {settings.max_file_size_bytes} bytes")
    print(f"  Chunk Size: {settings.chunk_size_bytes} bytes (max {settings.max_chunk_size_bytes})")
    print(f"  Max Buffered Bytes: {settings.max_buffered_bytes or 'unlimited'}")
    print(f"  Backend Timeout: {settings.backend_timeout_seconds}s")
    print(f"  Session Idle Timeout: {settings.session_idle_timeout_seconds or 'disabled'}")
    print(f"  CORS Origins: {', '.join(settings.cors_allow_origins)}")

@cli.command()
@click.option("--host", default="0.0.0.0", help="API host address")
@click.option("--port", default=8000, type=int, help="API port")
@click.option("--backend",
              type=click.Choice(["local", "s3"]),
              default=None,
              help="Override the configured storage backend")
def serve(host, port, backend):
    """Run the Uploads API with uvicorn"""
    import uvicorn
    from uploads_api.main import create_app

    settings = get_settings()
    if backend:
        settings = settings.model_copy(update={"storage_backend": backend})

    logging.basicConfig(level=settings.log_level)
    logger.info(f"Starting Uploads API on {host}:{port} with {settings.storage_backend} storage")
    uvicorn.run(create_app(settings), host=host, port=port)

if __name__ == "__main__":
    cli()
