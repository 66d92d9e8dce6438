"""Server-side services: connection rules, change feed and alerts"""
