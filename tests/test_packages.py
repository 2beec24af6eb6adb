"""
Tests for npm package inference from generated sources.
"""

from codeforge.file_blocks import FileBlock
from codeforge.packages import infer_packages, is_external, package_name


def test_package_name_keeps_scope():
    assert package_name("@radix-ui/react-dialog/dist/index") == "@radix-ui/react-dialog"
    assert package_name("lodash/debounce") == "lodash"


def test_local_specifiers_are_not_external():
    for specifier in ("./button", "../lib/x", "/abs", "@/components/ui", "node:fs", ""):
        assert not is_external(specifier)
    assert is_external("zod")
    assert not is_external("react", exclude=["react"])
    assert is_external("react-dom/client", exclude=["react-dom"])


def test_infer_from_mixed_import_forms():
    content = "\n".join(
        [
            "import React from 'react';",
            "import { motion } from \"framer-motion\";",
            "import '@fontsource/inter';",
            "const _ = require('lodash/fp');",
            "const mod = await import('date-fns');",
            "import {",
            "  Dialog,",
            "} from '@radix-ui/react-dialog';",
            "import Button from './Button';",
            "import { cn } from '@/lib/utils';",
        ]
    )
    found = infer_packages([FileBlock("src/a.tsx", content)], exclude=["react", "react-dom", "next"])
    assert found == ["framer-motion", "@fontsource/inter", "lodash", "date-fns", "@radix-ui/react-dialog"]


def test_dedup_across_files_first_seen_order():
    files = [
        {"path": "a.ts", "content": "import z from 'zod';\nimport a from 'axios';"},
        {"path": "b.ts", "content": "import a from 'axios';\nimport c from 'clsx';"},
    ]
    assert infer_packages(files) == ["zod", "axios", "clsx"]


def test_no_imports():
    assert infer_packages([FileBlock("a.css", "body { color: red; }")]) == []


def test_exclusion_matches_the_raw_specifier_only():
    content = "import Link from 'next/link';\nimport { createRoot } from 'react-dom/client';\nimport 'react';"
    found = infer_packages([FileBlock("src/a.tsx", content)], exclude=["react", "react-dom", "next"])
    assert found == ["next", "react-dom"]
