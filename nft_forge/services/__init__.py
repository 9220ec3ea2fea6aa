"""Collaborators reached by the pipeline steps: Solana RPC, Irys and local files."""
