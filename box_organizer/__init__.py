"""Location hierarchy and box/QR code lifecycle engine."""
