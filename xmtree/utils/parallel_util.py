#  Copyright 2021 Amazon.com, Inc. or its affiliates. All Rights Reserved.
#
#  Licensed under the Apache License, Version 2.0 (the "License"). You may not use this file except in compliance
#  with the License. A copy of the License is located at
#
#  http://aws.amazon.com/apache2.0/
#
#  or in the "license" file accompanying this file. This file is distributed on an "AS IS" BASIS, WITHOUT WARRANTIES
#  OR CONDITIONS OF ANY KIND, either express or implied. See the License for the specific language governing permissions
#  and limitations under the License.
import os
from concurrent.futures import ThreadPoolExecutor


def resolve_threads(threads):
    """Turn a user supplied thread count into an actual worker count.

    Args:
        threads (int): number of threads, 0 or negative to denote all the CPUs

    Returns:
        int: number of workers, at least 1
    """
    if threads is None or threads <= 0:
        return max(1, os.cpu_count() or 1)
    return int(threads)


def create_executor(threads, prefix="xmtree"):
    """Create a fixed-size worker pool.

    Args:
        threads (int): number of threads, 0 or negative to denote all the CPUs
        prefix (str, optional): thread name prefix

    Returns:
        concurrent.futures.ThreadPoolExecutor
    """
    return ThreadPoolExecutor(max_workers=resolve_threads(threads), thread_name_prefix=prefix)


def chunk_ranges(nr_items, nr_chunks):
    """Split `range(nr_items)` into at most `nr_chunks` contiguous slices of near-equal size."""
    nr_chunks = max(1, min(nr_chunks, nr_items))
    bounds = [nr_items * i // nr_chunks for i in range(nr_chunks + 1)]
    return [slice(bounds[i], bounds[i + 1]) for i in range(nr_chunks) if bounds[i] < bounds[i + 1]]
