# Diagnostics API package
