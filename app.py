#!/usr/bin/env python3
import sys

from stack_deployment.cli import main


sys.exit(main())
