from .cli import dupindex_main

dupindex_main()
