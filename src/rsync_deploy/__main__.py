from .rsync_deploy import main

main()
