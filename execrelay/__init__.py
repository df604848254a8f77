"""execrelay: remote command execution with live log streaming."""
