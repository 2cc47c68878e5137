"""Bridge eSign: electronic-signature workflow engine."""
