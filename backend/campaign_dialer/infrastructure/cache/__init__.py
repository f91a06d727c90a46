"""In-flight call slot stores"""
