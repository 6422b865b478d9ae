"""
Checkout bridge between the storefront, Webpay Plus and Resend.
"""
