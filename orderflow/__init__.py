"""
                Kiosk Order Flow

Order placement and fulfillment pipeline for multi-outlet restaurant
self-service kiosks: transactional stock reservation, payment with
compensation, kitchen fulfillment and live fan-out to every screen.
"""

__version__ = "1.0.0"
