"""
Logging setup and configuration for the LDAP user manager.

This module provides centralized logging configuration: console output,
optional daily-rotated log files, scrubbing of credentials from log messages,
and a security audit logger for authentication and account changes.
"""

import os
import re
import logging
import logging.handlers
from typing import Dict, Any, Optional


class SensitiveDataFilter(logging.Filter):
    """Filter to scrub sensitive data from log messages."""

    SENSITIVE_KEYWORDS = [
        'password', 'userPassword', 'credentials', 'connection_credentials',
        'secret', 'token', 'pwd', 'pass'
    ]

    def filter(self, record):
        """Filter out sensitive data from log records."""
        if hasattr(record, 'msg'):
            msg = str(record.msg)

            # Pattern for key=value (simple assignment)
            for keyword in self.SENSITIVE_KEYWORDS:
                pattern1 = rf'(\b{keyword}\s*=\s*)[^\s,}}\])]+'
                msg = re.sub(pattern1, r'\1****', msg, flags=re.IGNORECASE)

            # Pattern for 'key': 'value' in dict reprs and JSON
            for keyword in self.SENSITIVE_KEYWORDS:
                pattern2 = rf'([\'"]{keyword}[\'"]\s*:\s*)([\'"])[^\'"]*([\'"])'
                msg = re.sub(pattern2, r'\1\2****\3', msg, flags=re.IGNORECASE)

            record.msg = msg

        return True


class LoggingManager:
    """
    Manages logging configuration for the LDAP user manager.

    Provides console output and, when a log directory is configured,
    file-based logging with daily rotation.
    """

    def __init__(self):
        self.configured = False
        self.log_dir = None
        self.retention_days = 7

    def setup_logging(self, config: Optional[Dict[str, Any]]) -> None:
        """
        Set up logging based on configuration.

        Args:
            config: Logging configuration dictionary with optional keys
                level, console_level, log_dir, rotation, retention_days
        """
        if self.configured:
            return

        logging_config = config if config else {}

        log_level = str(logging_config.get('level', 'INFO')).upper()
        console_level = str(logging_config.get('console_level', log_level)).upper()
        self.log_dir = logging_config.get('log_dir')
        rotation = logging_config.get('rotation', 'daily')
        self.retention_days = logging_config.get('retention_days', 7)

        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, log_level, logging.INFO))
        root_logger.handlers.clear()

        detailed_formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        console_formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%H:%M:%S'
        )

        sensitive_filter = SensitiveDataFilter()

        console_handler = logging.StreamHandler()
        console_handler.setLevel(getattr(logging, console_level, logging.INFO))
        console_handler.setFormatter(console_formatter)
        console_handler.addFilter(sensitive_filter)
        root_logger.addHandler(console_handler)

        if self.log_dir:
            os.makedirs(self.log_dir, exist_ok=True)
            file_handler = self._create_file_handler(rotation)
            file_handler.setLevel(getattr(logging, log_level, logging.INFO))
            file_handler.setFormatter(detailed_formatter)
            file_handler.addFilter(sensitive_filter)
            root_logger.addHandler(file_handler)

        self.configured = True

        logger = logging.getLogger(__name__)
        logger.debug(f"Logging configured: level={log_level}, dir={self.log_dir}, "
                     f"retention={self.retention_days} days")

    def _create_file_handler(self, rotation: str) -> logging.Handler:
        """
        Create appropriate file handler based on rotation setting.

        Args:
            rotation: Rotation setting ('daily', 'midnight', or 'none')

        Returns:
            Configured logging handler
        """
        log_file = os.path.join(self.log_dir, 'ldap_user_manager.log')

        if rotation.lower() in ['daily', 'midnight']:
            handler = logging.handlers.TimedRotatingFileHandler(
                filename=log_file,
                when='midnight',
                interval=1,
                backupCount=self.retention_days,
                encoding='utf-8'
            )
            handler.suffix = '%Y-%m-%d'
        else:
            handler = logging.FileHandler(log_file, encoding='utf-8')

        return handler

    def reset(self) -> None:
        """Forget previous configuration so setup_logging() applies again."""
        self.configured = False


# Global logging manager instance
_logging_manager = LoggingManager()


def setup_logging(config: Optional[Dict[str, Any]] = None) -> None:
    """
    Convenience function to set up logging.

    Args:
        config: Logging configuration dictionary
    """
    _logging_manager.setup_logging(config)


class SecurityAuditLogger:
    """Special logger for security-related events."""

    def __init__(self):
        self.logger = logging.getLogger('security')

    def log_authentication_attempt(self, username: Optional[str], success: bool, reason: str = ""):
        """Log authentication attempts."""
        status = "SUCCESS" if success else "FAILURE"
        message = f"Authentication {status}: user={username}"
        if reason:
            message += f" - {reason}"
        if success:
            self.logger.info(message)
        else:
            self.logger.warning(message)

    def log_user_operation(self, operation: str, username: str, success: bool):
        """Log account changes for audit trail."""
        status = "SUCCESS" if success else "FAILURE"
        self.logger.info(f"User operation {status}: {operation} user={username}")


# Global security logger instance
security_logger = SecurityAuditLogger()
