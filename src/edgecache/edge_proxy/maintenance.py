"""Static document served for every path outside the proxy prefix."""

from __future__ import annotations


DEFAULT_MAINTENANCE_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>Under Maintenance</title>
  <style>
    body {
      font-family: -apple-system, 'Segoe UI', Roboto, sans-serif;
      min-height: 100vh; margin: 0; display: flex; align-items: center; justify-content: center;
      background: #f4f1ec; color: #3b3128;
    }
    .card { text-align: center; padding: 3rem 2rem; max-width: 420px; background: #fff; border-radius: 16px; }
    h1 { font-size: 1.5rem; margin-bottom: 0.5rem; }
    p { line-height: 1.6; opacity: 0.8; }
  </style>
</head>
<body>
  <div class="card">
    <h1>We'll be right back</h1>
    <p>This site is currently under maintenance.<br>Please check back shortly.</p>
  </div>
</body>
</html>
"""
